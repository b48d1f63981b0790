from tasklatch.cli import main

raise SystemExit(main())
