#!/usr/bin/env python3
import getpass
import sys

import bcrypt

MIN_PASSWORD_LENGTH = 8


def main() -> int:
    print("Generate Admin Password Hash")
    print("----------------------------")
    password = getpass.getpass("Enter admin password: ")
    if len(password) < MIN_PASSWORD_LENGTH:
        print(f"Error: Password must be at least {MIN_PASSWORD_LENGTH} characters.")
        return 1

    confirm = getpass.getpass("Confirm admin password: ")
    if password != confirm:
        print("Error: Passwords do not match.")
        return 1

    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())

    print("\nSuccess! Add the following lines to your .env file:")
    print("ADMIN_USERNAME=admin")
    print(f"ADMIN_PASSWORD_HASH={hashed.decode('utf-8')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
