"""Model selector enumeration.

Author: Matthew Hong
"""

from enum import Enum


class ModelSelector(str, Enum):
    """Identifies which pre-trained classifier backend handles a request.

    Member order matches the segmented control of the capture UI, so
    ``ModelSelector.from_index(0)`` is the first (default) backend.
    """

    GOOGLENET = "googlenet"
    SQUEEZENET = "squeezenet"
    RESNET50 = "resnet50"

    @classmethod
    def from_index(cls, index: int) -> "ModelSelector":
        """Map a segment index (0, 1, 2) to a selector.

        Raises:
            ValueError: If index does not name a backend
        """
        members = list(cls)
        if not 0 <= index < len(members):
            raise ValueError(
                f"Unknown model index {index}. Expected 0..{len(members) - 1}"
            )
        return members[index]

    @property
    def index(self) -> int:
        return list(type(self)).index(self)
