from triage.main import main

main()
