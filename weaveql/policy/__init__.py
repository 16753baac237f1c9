"""weaveQL policy layer: readonly guard, table rules and policy hooks."""
from weaveql.policy.engine import PolicyConfig, PolicyEngine, PolicyHook

__all__ = ["PolicyConfig", "PolicyEngine", "PolicyHook"]
