"""ucibridge lives at <https://github.com/ucibridge/ucibridge>.

ucibridge
---------

Supervise a chess engine child process and bridge its line protocol.

"""
import pathlib

from setuptools import find_packages, setup

here = pathlib.Path(__file__).parent

about = {}
exec((here / "src" / "ucibridge" / "__about__.py").read_text(encoding="utf-8"), about)

tests_reqs = [
    line
    for line in (here / "requirements" / "test.txt").read_text().split("\n")
    if line
]

readme = (here / "README.md").read_text(encoding="utf-8")


setup(
    name=about["__title__"],
    version=about["__version__"],
    url=about["__github__"],
    download_url=about["__pypi__"],
    project_urls={
        "Documentation": about["__docs__"],
        "Code": about["__github__"],
        "Issue tracker": about["__tracker__"],
    },
    license=about["__license__"],
    author=about["__author__"],
    author_email=about["__email__"],
    description=about["__description__"],
    long_description=readme,
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages("src"),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=['typing-extensions; python_version < "3.11"'],
    extras_require={"test": tests_reqs},
    zip_safe=False,
    keywords=about["__title__"],
    classifiers=[
        "Development Status :: 3 - Alpha",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX",
        "Operating System :: MacOS :: MacOS X",
        "Intended Audience :: Developers",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: Games/Entertainment :: Board Games",
        "Topic :: Software Development :: Libraries",
    ],
)
