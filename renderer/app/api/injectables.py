"""
Injectable discovery endpoint.

Lists every registered injection key with its dependencies and, where
the injector advertises them, the display formats a template may select
for it. Read-only; served from the frozen injector registry.
"""

from typing import List, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from renderer.app.injection.formatting import FormatConfig
from renderer.app.injection.injector import formats_of
from renderer.app.injection.values import ValueType

router = APIRouter(prefix="/injectables", tags=["Injectables"])


class InjectableItem(BaseModel):
    key: str
    value_type: ValueType
    name: str
    dependencies: List[str]
    formats: Optional[FormatConfig] = None


@router.get(
    "",
    response_model=List[InjectableItem],
    summary="List registered injectables and their display formats",
)
def list_injectables(request: Request) -> List[InjectableItem]:
    registry = request.app.state.engine.injectors
    items = []
    for key in registry.keys():
        injector = registry.get(key)
        items.append(
            InjectableItem(
                key=str(key),
                value_type=key.value_type,
                name=key.name,
                dependencies=[
                    str(d) for d in getattr(injector, "dependencies", ()) or ()
                ],
                formats=formats_of(injector),
            )
        )
    return items
