"""Cadence Sync: audio/text synchronization and layout pipeline for EPUB read-along.

WHY: A narrated book arrives as three independent, imprecise artifacts:
the book's sentences, a speech-to-text word timeline that only roughly
matches the book's wording, and a browser's rendered page geometry.
Playback on a reading device needs all three reconciled into one
consistent timing model.

HOW: Two stages. Align (sentence tokenizing, fuzzy matching, chapter
offset search, range alignment, interpolation) produces timed spans per
chapter; layout (resource policy, oracle pagination, span splitting,
validation) fits those spans onto rendered pages.

RULES:
- Chapters are aligned strictly in spine order (state carries forward)
- Alignment anomalies are absorbed; resource/layout anomalies escalate
- The rendering oracle and duration probe are injected collaborators
"""

__version__ = "0.1.0"
