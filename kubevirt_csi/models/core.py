"""Core pydantic models."""

from typing import Annotated

from pydantic import BaseModel, Field


class KubeObject(BaseModel):
    """Common attributes of the Kubernetes objects handled by the driver.

    Attributes:
    ----------
        name (str): Object name
        namespace (str | None): Object namespace. None for cluster scoped objects
        uid (str): Unique identifier assigned by the API server
        labels (dict of {str: str}): Object labels
        annotations (dict of {str: str}): Object annotations
    """

    name: Annotated[str, Field(description="Object name")]
    namespace: Annotated[
        str | None,
        Field(default=None, description="Object namespace. None if cluster scoped"),
    ]
    uid: Annotated[
        str, Field(default="", description="Unique identifier set by the API server")
    ]
    labels: Annotated[
        dict[str, str], Field(default_factory=dict, description="Object labels")
    ]
    annotations: Annotated[
        dict[str, str], Field(default_factory=dict, description="Object annotations")
    ]

    def has_labels(self, labels: dict[str, str]) -> bool:
        """Return True if the object carries all the given labels."""
        return all(self.labels.get(k) == v for k, v in labels.items())
