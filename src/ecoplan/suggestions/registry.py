"""
Explainer registry keyed by suggestion template id.

The registry pattern provides:
- An explicit mapping from template id to explanation strategy
- An explicit GenericExplainer fallback instead of a missing-key lookup
- Testing isolation (register only specific explainers)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from ecoplan.suggestions.explainers.base import Explainer

T = TypeVar("T", bound="Explainer")


class ExplainerRegistry:
    """
    Centralized registry of explainer strategies.

    Explainers register themselves with the @register_explainer decorator,
    once per template id listed in their `template_ids`.

    Example:
        registry = get_registry()
        explainer = registry.resolve("DISK_SORT")
        evidence = explainer.extract_evidence(plan, metrics)
    """

    def __init__(self) -> None:
        self._explainers: dict[str, type[Explainer]] = {}
        self._fallback: Explainer | None = None

    def register(self, explainer_cls: type[T]) -> type[T]:
        """
        Register an explainer class for each of its template ids.

        Args:
            explainer_cls: The explainer class to register

        Returns:
            The same class (allows decorator usage)

        Raises:
            ValueError: If a template id already has an explainer
        """
        if not explainer_cls.template_ids:
            raise ValueError(f"{explainer_cls.__name__} declares no template_ids")

        for template_id in explainer_cls.template_ids:
            if template_id in self._explainers:
                existing = self._explainers[template_id]
                raise ValueError(
                    f"Template '{template_id}' already explained by "
                    f"{existing.__module__}.{existing.__name__}. "
                    f"Cannot register {explainer_cls.__module__}.{explainer_cls.__name__}"
                )

        for template_id in explainer_cls.template_ids:
            self._explainers[template_id] = explainer_cls
        return explainer_cls

    def unregister(self, template_id: str) -> bool:
        """
        Remove the explainer for a template id.

        Returns:
            True if an explainer was found and removed, False otherwise
        """
        if template_id in self._explainers:
            del self._explainers[template_id]
            return True
        return False

    def get(self, template_id: str) -> type[Explainer] | None:
        """Explainer class registered for a template id, or None."""
        return self._explainers.get(template_id)

    def resolve(self, template_id: str) -> Explainer:
        """
        Explainer instance for a template id.

        Returns:
            A fresh instance of the registered explainer, or the generic fallback
        """
        explainer_cls = self._explainers.get(template_id)
        if explainer_cls is None:
            return self.fallback
        return explainer_cls()

    @property
    def fallback(self) -> Explainer:
        if self._fallback is None:
            # Imported lazily: explainer modules import this registry
            from ecoplan.suggestions.explainers.base import GenericExplainer

            self._fallback = GenericExplainer()
        return self._fallback

    def all_ids(self) -> list[str]:
        """Template ids with a dedicated explainer, in registration order."""
        return list(self._explainers.keys())

    def clear(self) -> None:
        """
        Remove all registered explainers.

        Primarily useful for testing.
        """
        self._explainers.clear()

    def __len__(self) -> int:
        return len(self._explainers)

    def __contains__(self, template_id: str) -> bool:
        return template_id in self._explainers


# Global registry instance
_global_registry = ExplainerRegistry()


def get_registry() -> ExplainerRegistry:
    """
    Get the global explainer registry.

    Returns:
        The singleton ExplainerRegistry instance
    """
    return _global_registry


def register_explainer(explainer_cls: type[T]) -> type[T]:
    """
    Decorator to register an explainer with the global registry.

    Example:
        @register_explainer
        class CartesianExplainer(Explainer):
            template_ids = ("CARTESIAN_PRODUCT",)
            ...
    """
    return _global_registry.register(explainer_cls)
