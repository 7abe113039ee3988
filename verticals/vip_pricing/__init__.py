"""VIP pricing vertical — tag-based tiered pricing for Shopify storefronts.

Puts the project patterns to work in one domain:
- RuleSet kept as a versioned JSON blob on the shop (RuleStore)
- Segment + automatic discount provisioning as a compensating saga
- Pure-function classifier and logging policy
- Access log behind a bounded queue with a dead letter queue
- Login analytics over the access log
- FastAPI router with per-request dependency assembly
"""
