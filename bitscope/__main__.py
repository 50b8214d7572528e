from bitscope.cli import main

main()
