from plr.cli import main

raise SystemExit(main())
