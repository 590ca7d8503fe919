from setuptools import setup


setup(
    name="timesheet-doctor",
    version="0.3.0",
    description="Timesheet CSV normalization, utilization alerts and a local dashboard for consulting teams",
    packages=["timesheet_doctor", "timesheet_doctor.ingest"],
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "streamlit",
        "requests",
    ],
    entry_points={
        "console_scripts": [
            "timesheet-doctor=timesheet_doctor.cli:main",
        ]
    },
)
