"""Readcast - catalogs EPUBs, read-along EPUBs and audiobook folders."""

__version__ = '0.4.0'
