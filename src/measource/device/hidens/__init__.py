"""HiDens network sample server support."""

from .electrodes import ElectrodeTable, load_electrode_table
from .frames import channel_rows, decode_frames, parse_channel_report, verify_reply
from .hidens import HidensSource
from .link import HidensLink
from .uploader import ConfigUploader, PendingUpload, UploadResult

__all__ = [
    "HidensSource",
    "HidensLink",
    "ElectrodeTable",
    "load_electrode_table",
    "ConfigUploader",
    "PendingUpload",
    "UploadResult",
    "channel_rows",
    "decode_frames",
    "parse_channel_report",
    "verify_reply",
]
