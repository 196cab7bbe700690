from setuptools import setup, find_packages
setup(
    name="property-fusion",
    version="0.1.0",
    packages=find_packages("src"),
    package_dir={"": "src"},
    include_package_data=True,
    python_requires=">=3.11",
    install_requires=[
        "requests>=2.31",
        "pydantic>=2.5",
    ],
    extras_require={
        "test": ["pytest>=7.4"],
    },
    entry_points={
        'console_scripts': [
            'property-fusion=property_fusion.__main__:main'
        ]
    }
)
