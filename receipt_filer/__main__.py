from .app_runner import main

main()
