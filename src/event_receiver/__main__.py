from event_receiver.service import main

if __name__ == "__main__":
    main()
