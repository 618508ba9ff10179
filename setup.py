"""Setup script for the SectionCal Lite school calendar service."""

from pathlib import Path

from setuptools import find_packages, setup

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Read requirements; pytest and "# testing" lines go to the dev/test extras
requirements_file = Path(__file__).parent / "requirements.txt"
requirements = []
dev_requirements = []

if requirements_file.exists():
    content = requirements_file.read_text().strip()
    lines = content.split("\n")

    for line in lines:
        line = line.strip()
        # Skip empty lines and comments
        if not line or line.startswith("#"):
            continue

        requirement, _, comment = line.partition("#")
        requirement = requirement.strip()

        # Separate development dependencies
        if "pytest" in requirement or "testing" in comment.lower():
            dev_requirements.append(requirement)
        else:
            requirements.append(requirement)

setup(
    name="sectioncal-lite",
    version="0.1.0",
    description="School calendar service answering which events affect a class section today",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="SectionCal Team",
    # Package configuration
    packages=find_packages(include=["sectioncal_lite", "sectioncal_lite.*"]),
    include_package_data=True,
    # Dependencies
    install_requires=requirements,
    extras_require={
        "test": dev_requirements,
        "dev": dev_requirements
        + [
            "black>=23.0.0",
            "isort>=5.12.0",
            "mypy>=1.0.0",
        ],
    },
    python_requires=">=3.11",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Web Environment",
        "Intended Audience :: Education",
        "Operating System :: POSIX :: Linux",
        "Operating System :: MacOS",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Office/Business :: Scheduling",
        "Framework :: AsyncIO",
        "Framework :: aiohttp",
    ],
    keywords="calendar ics school class-section rrule aiohttp async",
    # Entry points
    entry_points={
        "console_scripts": [
            "sectioncal-lite=sectioncal_lite.__main__:main",
        ],
    },
    zip_safe=False,
    platforms=["linux", "macos"],
)
