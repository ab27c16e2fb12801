from regpull.main import main

main()
