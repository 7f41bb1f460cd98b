from .base import CallbackAdapter, RecordingAdapter, SubsystemAdapter, split_state

__all__ = ["SubsystemAdapter", "RecordingAdapter", "CallbackAdapter", "split_state"]
