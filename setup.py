from setuptools import setup


setup(
    name="manifest-importer",
    version="0.3.0",
    description="Map, validate, and geocode delivery manifest spreadsheets before handing rows to the host app",
    packages=["manifest_importer"],
    install_requires=[
        "pandas<3",
        "chardet",
        "openpyxl",
        "streamlit",
        "requests",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "manifest-importer=manifest_importer.cli:main",
        ]
    },
)
