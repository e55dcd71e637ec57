from ..services.orders import OrderWorkflow, build_workflow

_workflow: OrderWorkflow | None = None


def get_workflow() -> OrderWorkflow:
    # overridden in tests via app.dependency_overrides
    global _workflow
    if _workflow is None:
        _workflow = build_workflow()
    return _workflow
