"""Core data model shared by the alignment and layout stages.

WHY: The IR dataclasses are the contract between stages and with the
external collaborators (speech-to-text adapter, rendering oracle, bundle
writer). Transcription documents and book package access live here too
because every stage reads them.

HOW: ir.py defines the frozen dataclasses, transcription.py converts the
on-disk transcription format, package.py reads files out of an EPUB.

RULES:
- IR dataclasses are the contract; change with care
- No stage mutates an IR value it received
"""
