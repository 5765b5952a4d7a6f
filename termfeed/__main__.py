from termfeed.app import main

raise SystemExit(main())
