from minitop.app import main

main()
