"""
Command‑line interface for the Open Market Research back end.

Usage:

```
python -m open_market_research.main [server|status|structure FILE]
```

``server`` (the default) starts the API on port 8000.  ``status``
reports whether the LLM service is configured.  ``structure`` reads a
text file of raw research notes and prints the structured study as
JSON, which is handy for trying prompts without the web front end.

Settings are read from the environment; a ``.env`` file in the
working directory is loaded first if present.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

USAGE = "Usage: python -m open_market_research.main [server|status|structure FILE]"


def run_server() -> None:
    """Start the API server on port 8000."""
    from open_market_research.backend import api
    api.run(host="0.0.0.0", port=int(os.getenv("PORT", "8000")))


def run_status() -> int:
    from open_market_research.backend.research_structurer import ResearchStructurer
    available = ResearchStructurer().is_available()
    print("LLM service is available" if available else "LLM service is not available")
    return 0 if available else 1


def run_structure(path: str) -> int:
    """Structure the research notes in ``path`` and print the result."""
    from open_market_research.backend.research_structurer import ResearchStructurer
    file_path = Path(path)
    if not file_path.is_file():
        print(f"File not found: {path}")
        return 1
    content = file_path.read_text(encoding="utf-8")
    result = ResearchStructurer().structure_research(content, title=file_path.stem)
    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0 if result.get("success") else 1


def main() -> None:
    """Entry point for the CLI.

    Parses the first command‑line argument to determine what to run.
    Defaults to ``server`` if no argument is supplied.
    """
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = sys.argv[1:]
    command = args[0].lower() if args else "server"
    if command == "server":
        run_server()
    elif command == "status":
        sys.exit(run_status())
    elif command == "structure" and len(args) == 2:
        sys.exit(run_structure(args[1]))
    else:
        print(f"Unknown command: {' '.join(args)}")
        print(USAGE)
        sys.exit(1)


if __name__ == "__main__":
    main()
