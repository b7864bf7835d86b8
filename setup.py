# -*- coding: utf-8 -*-
from setuptools import find_packages, setup


def get_long_description():

    for line in open('README.rst', encoding='utf-8'):
        if '.. < package description' in line:
            break
        yield line

    for line in open('HISTORY.rst', encoding='utf-8'):
        yield line


setup(
    name='uniwash',
    version='1.0.0',
    license='BSD',
    description='Reservations and SMS remote control for washing machines',
    long_description=''.join(get_long_description()),
    long_description_content_type='text/x-rst',
    packages=find_packages('src'),
    package_dir={'': 'src'},
    include_package_data=True,
    zip_safe=False,
    platforms='any',
    python_requires='>=3.11',
    install_requires=[
        'APScheduler>=3.10,<4',
        'httpx',
        'python-dateutil',
        'psycopg2-binary',
        'pytz',
        'sedate',
        'SQLAlchemy>=2.0',
    ],
    extras_require=dict(
        test=[
            'mock',
            'pytest',
            'testing.postgresql',
        ],
    ),
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: BSD License',
        'Operating System :: OS Independent',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Topic :: Software Development :: Libraries :: Python Modules'
    ],
)
