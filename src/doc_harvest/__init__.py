"""doc-harvest core library.

This package crawls one course of an authenticated LMS and collects the
PDF documents it links to, directly or through module items and wiki pages.

A crawl survives full teardown between pages: all progress lives in a
persisted session record, and every page hop resumes from it.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
