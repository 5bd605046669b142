# src/wg_provisioner/saga.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from .logging_utils import get_logger

LOGGER = get_logger(__name__)


@dataclass
class Step:
    name: str
    action: Callable[[], Any]
    compensate: Optional[Callable[[Any], None]] = None


@dataclass
class Saga:
    """
    Suite ordonnée d'étapes. Si une étape lève une exception, les
    compensations des étapes déjà terminées sont appelées en ordre
    inverse (avec le résultat de leur action), puis l'exception remonte.
    """
    name: str
    _done: List[tuple] = field(default_factory=list)

    def run(self, step: Step) -> Any:
        LOGGER.debug("[%s] %s", self.name, step.name)
        try:
            result = step.action()
        except Exception:
            self.compensate()
            raise
        self._done.append((step, result))
        return result

    def compensate(self) -> None:
        while self._done:
            step, result = self._done.pop()
            if step.compensate is None:
                continue
            LOGGER.warning("[%s] compensating %s", self.name, step.name)
            try:
                step.compensate(result)
            except Exception:
                # une compensation ratée ne doit pas masquer l'erreur d'origine
                LOGGER.exception("[%s] compensation of %s failed", self.name, step.name)

    def __enter__(self) -> "Saga":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.compensate()
