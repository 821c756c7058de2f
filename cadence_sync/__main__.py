"""Package entry point for ``python -m cadence_sync``.

WHY: Users run the pipeline as ``python -m cadence_sync align ...``.
Python's ``-m`` flag looks for ``__main__.py`` inside the package.

HOW: Delegates to the CLI's main() function.
"""

if __name__ == "__main__":
    from cadence_sync.cli import main
    main()
