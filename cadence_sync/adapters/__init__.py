"""Concrete LayoutOracle implementations.

WHY: The layout package only knows the LayoutOracle interface. Engines
that need heavy optional dependencies live here so importing
cadence_sync never requires a browser.

HOW: playwright_oracle.py drives headless Chromium. Import it directly;
this package does not import it eagerly.
"""
