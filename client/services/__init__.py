"""Service layer for client-side business logic.

Services sit between the user-facing surfaces (CLI, UI bridges) and the
events API. This separation provides:
- Clear orchestration rules in one place (payment stages, certificate export)
- Typed endpoint wrappers instead of ad-hoc HTTP calls
- One notification channel shared by every component

Layer hierarchy:
    Surfaces (CLI/UI) -> Services (Orchestration) -> ApiClient (HTTP)

Services should:
- Convert failures into stage transitions or notifications at their boundary
- Take collaborators (ApiClient, Notifier, gateway) as arguments

Services should NOT:
- Reach for global UI state
- Know about terminal or browser details
"""
