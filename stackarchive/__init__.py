"""
StackArchive: Publication Archiver & E-book Builder

A utility for discovering every post of an online publication, retrieving
the full content (including paid posts when a session cookie is supplied),
and packaging it as an offline Markdown bundle or a single EPUB file.
"""

__version__ = "1.0"
__author__ = "StackArchive Project"
__description__ = "Publication Archiver & E-book Builder"
