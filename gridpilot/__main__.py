# gridpilot/__main__.py
from gridpilot.cli import main

raise SystemExit(main())
