from healthwatch.cli import main


raise SystemExit(main())
