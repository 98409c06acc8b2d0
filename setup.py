import setuptools

setuptools.setup(
    name="keydoor",
    version="0.3.0",
    description="Door access granted to Nostr public keys through a challenge-response handshake",
    license="Apache-2.0",
    python_requires=">=3.9",
    packages=setuptools.find_packages(exclude=["test", "test.*"]),
    install_requires=[
        "SQLAlchemy>=1.4",
        "tornado>=6.1",
    ],
    extras_require={
        "test": ["pytest"],
    },
    data_files=[("share/keydoor/config", ["config/door.conf", "config/logging.conf"])],
    entry_points={
        "console_scripts": [
            "keydoor_door = keydoor.cmd.door:main",
        ],
    },
)
