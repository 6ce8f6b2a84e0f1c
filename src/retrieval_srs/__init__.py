"""Audio retrieval practice with Leitner-box scheduling."""

from retrieval_srs.consts import VERSION

__version__ = VERSION
