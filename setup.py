import setuptools
from setuptools.command.egg_info import egg_info


class egg_info_ex(egg_info):
    """Includes license file into `.egg-info` folder."""

    def run(self):
        # don't duplicate license into `.egg-info` when building a distribution
        if not self.distribution.have_run.get("install", True):
            # `install` command is in progress, copy license
            self.mkpath(self.egg_info)
            self.copy_file("LICENSE", self.egg_info)

        egg_info.run(self)


with open("README.md") as f:
    long_description = f.read()


setuptools.setup(
    name="rkflash",
    version="0.1.0",
    description="Rockchip bootloader flashing and firmware unpacking tools",
    packages=setuptools.find_packages("src"),
    package_dir={"": "src"},
    package_data={
        "rkflash": ["py.typed"],
    },
    install_requires=[
        "beartype>=0.16.0",
        "orjson>=3.9.0",
        "pyusb>=1.2.1",
    ],
    extras_require={
        "test": [
            "black==23.3.0",
            "hypothesis>=6.39.3",
            "mypy>=1.0",
            "pytest",
            "pytest-cov",
        ],
    },
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
        "License :: OSI Approved :: BSD License",
        "Topic :: System :: Hardware",
        "Typing :: Typed",
    ],
    python_requires=">=3.8",
    license="BSD-2-Clause",
    license_files=["LICENSE"],
    cmdclass={"egg_info": egg_info_ex},
    entry_points={
        "console_scripts": ["rkflash = rkflash.__main__:main"],
    },
)
