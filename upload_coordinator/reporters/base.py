"""Base reporter interface."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from upload_coordinator.models import UploadResult


class Reporter(ABC):
    """Abstract base class for upload progress reporters."""

    @abstractmethod
    def on_upload_start(self, file_name: str, file_size: int, strategy: str) -> None:
        """Called before the session is created."""
        pass

    @abstractmethod
    def on_session_created(self, upload_id: str, chunk_size: int, total_chunks: int) -> None:
        """Called once the coordinator has returned the chunk plan."""
        pass

    @abstractmethod
    def on_part_complete(self, index: int, size: int, skipped: bool) -> None:
        """Called after a part is uploaded, or skipped when resuming."""
        pass

    @abstractmethod
    def on_upload_complete(self, result: "UploadResult") -> None:
        """Called when the upload has been committed or has failed."""
        pass
