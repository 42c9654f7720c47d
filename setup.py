from setuptools import setup, find_packages

with open("Readme.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="reportmate-agent-client",
    version="1.0.0",
    author="ReportMate",
    author_email="support@reportmate.io",
    description='Agent pour collecter l\'inventaire et la télémétrie des postes macOS et les envoyer à l\'API ReportMate.',
    long_description=long_description,
    long_description_content_type='text/markdown',
    include_package_data=True,
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires='>=3.8',
    install_requires=[
        "psutil>=5.9.0",
        "requests>=2.28.0",
        "Flask>=2.3.0",
        "schedule>=1.2.0",
        "configparser>=5.3.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
        ],
        "dev": [
            "black>=23.0.0",
            "flake8>=6.0.0",
        ],
    },

    entry_points='''
        [console_scripts]
        reportmate-agent=reportmate_agent.main:main
    '''
)
