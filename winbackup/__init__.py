"""Win32 backup streams, extended attribute buffers, FILETIME values and PAX tar conversion."""

__version__ = "0.1.0"
__all__ = ["backup", "backuptar", "ea", "fileinfo", "paxtime"]