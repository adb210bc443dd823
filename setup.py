from setuptools import setup, find_packages

# To install local development version use:
#    pip install -e .
setup(
    name='gridortho',
    version='0.1.0',
    description='Orthorectification of oriented photos with a DTM',
    license='AGPL-3.0-or-later',
    packages=find_packages(include=['gridortho', 'gridortho.*']),
    python_requires='>=3.8',
    install_requires=[
        'numpy>=1.19',
        'rasterio>=1.3',
        'affine<3',
        'opencv-python-headless>=4.5',
        'pyyaml>=5.4',
        'click>=8',
        'tqdm>=4.6',
        'fsspec>=2023.3',
    ],
    extras_require={'tests': ['pytest']},
    entry_points={'console_scripts': ['gridortho=gridortho.cli:cli']},
)
