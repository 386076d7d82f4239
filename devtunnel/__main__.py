from devtunnel.cli import main

main()
