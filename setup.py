import io
import os
from setuptools import setup

def read(name):
    file_path = os.path.join(os.path.dirname(__file__), name)
    return io.open(file_path, encoding='utf8').read()

setup(
    name='python-regpull',
    version='1.0.0',
    description="Package for pulling images from a Docker v2 registry",
    long_description=read('README.rst'),
    keywords='docker registry manifest blob',
    license='MIT',
    packages=['regpull'],
    package_data={"regpull": ["py.typed"]},
    entry_points={'console_scripts': ['regpull=regpull.main:main']},
    install_requires=['www-authenticate>=0.9.2',
                      'requests>=2.18.4',
                      'urllib3>=1.21.1',
                      'jwcrypto>=1.4.2',
                      'tqdm>=4.19.4',
                      'python-dateutil>=2.8.0'],
    extras_require={'test': ['pytest>=7.0',
                             'responses>=0.23.0']},
    python_requires='>=3.7'
)
