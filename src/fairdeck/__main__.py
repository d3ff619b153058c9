from fairdeck.cli import main

raise SystemExit(main())
