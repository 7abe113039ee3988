"""Reusable patterns behind the VIP pricing vertical.

Each module is a self-contained pattern: the pure-function rules engine
(classification and logging policy), the provisioning saga state machine,
and the shop-scoped async repository.
"""
