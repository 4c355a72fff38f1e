from setuptools import find_packages, setup

# Base requirements for all platforms
install_requires = [
  "aiofiles>=24.1.0",
  "aiohttp>=3.10.11",
  "anyio>=4.4.0,<4.12",
  "certifi>=2024.8.30",
  "loguru>=0.7.2",
  "numpy>=2.0.0",
  "pydantic>=2.11.0",
]

extras_require = {
  "test": [
    "pytest>=8.3.0",
    "pytest-asyncio>=0.24.0",
  ],
}

setup(
  name="modelvault",
  version="0.0.1",
  python_requires=">=3.12",
  packages=find_packages(where="src"),
  package_dir={"": "src"},
  install_requires=install_requires,
  extras_require=extras_require,
  package_data={
    "modelvault": [
      "resources/models/*.model",
    ]
  },
  entry_points={"console_scripts": ["modelvault = modelvault.main:main"]},
)
