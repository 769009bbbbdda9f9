from domtap.cli import main

main()
