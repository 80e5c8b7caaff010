from setuptools import setup, find_packages

setup(
    name="ilsws-client",
    version="0.1.0",
    description="Client library for SirsiDynix Symphony Web Services patron records",
    packages=find_packages(exclude=['tests', 'tests.*']),
    package_data={
        'ilsws_client': ['local-config.yaml'],
    },
    include_package_data=True,
    install_requires=[
        'pyyaml>=6.0',
        'jsonschema>=4.17.0',
        'requests>=2.28.0',
    ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
    python_requires='>=3.9',
)
