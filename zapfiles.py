#!/usr/bin/env python3
import json
import logging
import os
import shutil
import zaputils as utils

logger = logging.getLogger("zapper")

dataFolder = "data/"
logFolder = f"{dataFolder}logs/"
defaultConfigFile = f"{dataFolder}zapconfig.json"
sampleConfigFile = "sample-zapconfig.json"

# Make common folders if not already present
def makeFolders():
    utils.makeFolderIfNotExists(dataFolder)
    utils.makeFolderIfNotExists(logFolder)

def loadJsonFile(filename, default=None):
    if filename is None: return default
    if not os.path.exists(filename): return default
    with open(filename) as f:
        return(json.load(f))

def getConfig(filename=defaultConfigFile):
    c = utils.getCommandArg("config") # allow overriding default filename
    if c is not None: filename = c
    logger.debug(f"Loading config from {filename}")
    if not os.path.exists(filename):
        logger.warning(f"Config file does not exist at {filename}")
        return {}
    return loadJsonFile(filename, {})

def copySampleConfig(filename=defaultConfigFile):
    shutil.copy(sampleConfigFile, filename)
    logger.info(f"Copied {sampleConfigFile} to {filename}")

def getConfigSection(aConfig, sectionName):
    if aConfig is None: return {}
    section = aConfig.get(sectionName)
    if type(section) is not dict: return {}
    return section
