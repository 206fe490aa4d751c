"""Numeric process exit codes used by the ``tiercache`` command line.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~tiercache.exceptions.TierCacheError` subclass.
Shell scripts can inspect the exit code to tell a cache miss apart from a
storage failure without parsing stderr.

Example::

    $ tiercache get session:42
    $ echo $?
    4   # EXIT_NOT_FOUND -- no live entry for the key
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments (e.g. an empty key)."""

EXIT_NOT_FOUND = 4
"""No unexpired entry exists for the requested key."""

EXIT_READ_ERROR = 5
"""An entry could not be read back from storage."""

EXIT_WRITE_ERROR = 6
"""An entry could not be written to or removed from storage."""

EXIT_CODEC_ERROR = 7
"""A value could not be encoded, or stored bytes could not be decoded."""
