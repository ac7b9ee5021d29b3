from spice.cli import main

raise SystemExit(main())
