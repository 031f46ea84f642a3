from perf_tap.main import main

raise SystemExit(main())
